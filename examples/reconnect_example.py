"""
Example of a fixed-rate host loop that keeps one BLE peripheral connected.

The loop never blocks on Bluetooth I/O. Each frame it calls
`BluetoothManager.process()`, which delivers everything the background
runtime produced since the previous frame as signals and pubsub messages.

This example shows the **handle reuse pattern**:
- Ask the manager for a device handle once with `connect_device()`
- When the link drops, call `connect_async()` again on the same handle
- Subscribe to a notify characteristic after every successful discovery

Usage:
    python examples/reconnect_example.py AA:BB:CC:DD:EE:FF 180d 2a37
"""
import argparse
import logging
import time

from pubsub import pub

from blebridge import BluetoothManager

# Host frame rate; process() is called once per frame
FRAME_INTERVAL = 1.0 / 30

# Delay in seconds before retrying after a failed or lost connection
RETRY_DELAY_SECONDS = 5

logger = logging.getLogger(__name__)


def on_notified(manager, address, char_uuid, data):
    """
    Log every notification published by any manager in the process.

    Parameters:
        manager: The BluetoothManager that dispatched the message.
        address (str): Peripheral address.
        char_uuid (str): Characteristic that produced the value.
        data (bytes): Raw notification payload.
    """
    logger.info("%s %s -> %s", address, char_uuid, data.hex())


def main():
    """
    Run the host loop until interrupted.

    The loop initializes the adapter, connects, discovers services and
    subscribes. On disconnect or failure it schedules a retry on the same
    device handle. All Bluetooth work happens in the background; the loop
    only reacts to signals.
    """
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(
        description="BLE bridge reconnection example (handle reuse pattern)."
    )
    parser.add_argument("address", help="BLE address of the peripheral.")
    parser.add_argument("service", help="Service UUID containing the characteristic.")
    parser.add_argument("characteristic", help="Notify characteristic UUID.")
    args = parser.parse_args()

    pub.subscribe(on_notified, "blebridge.characteristic.notified")

    manager = BluetoothManager()
    state = {"device": None, "retry_at": None}

    def schedule_retry(reason):
        logger.warning("Link to %s unavailable (%s); retrying in %ds", args.address, reason, RETRY_DELAY_SECONDS)
        state["retry_at"] = time.monotonic() + RETRY_DELAY_SECONDS

    def on_services(_services):
        state["device"].subscribe_characteristic(args.service, args.characteristic)

    def on_adapter(success, error):
        if not success:
            logger.error("Bluetooth adapter unavailable: %s", error)
            return
        device = manager.connect_device(args.address)
        device.on("connected", device.discover_services)
        device.on("services_discovered", on_services)
        device.on("connection_failed", schedule_retry)
        device.on("disconnected", schedule_retry)
        device.on("operation_failed", lambda op, error: logger.warning("%s failed: %s", op, error))
        state["device"] = device

    manager.on("adapter_initialized", on_adapter)
    manager.on("error_occurred", lambda message: logger.error("%s", message))
    manager.initialize()

    with manager:
        try:
            while True:
                manager.process()
                retry_at = state["retry_at"]
                if retry_at is not None and time.monotonic() >= retry_at:
                    state["retry_at"] = None
                    logger.info("Reconnecting to %s...", args.address)
                    state["device"].connect_async()
                time.sleep(FRAME_INTERVAL)
        except KeyboardInterrupt:
            logger.info("Exiting...")


if __name__ == "__main__":
    main()
