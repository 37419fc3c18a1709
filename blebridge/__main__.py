"""Command line demo host: drives BluetoothManager from a fixed-rate loop."""

import argparse
import logging
import sys
import time
from typing import Callable, Dict, List, Optional

from tabulate import tabulate

from blebridge.ble.client import BleakTransport
from blebridge.ble.constants import BLEConfig
from blebridge.ble.utils import _sleep
from blebridge.manager import BluetoothManager

FRAME_INTERVAL = 1.0 / 60

logger = logging.getLogger("blebridge.cli")


class ScriptError(Exception):
    """An error raised to end the command line script with an error code."""

    def __init__(self, message, code):
        super().__init__(message)
        self.msg = message
        self.code = code


def build_parser() -> argparse.ArgumentParser:
    """Build the script's argument parser."""
    parser = argparse.ArgumentParser(
        prog="python -m blebridge", description="Non-blocking BLE bridge demo host"
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="Increase logging verbosity"
    )
    parser.add_argument(
        "--adapter", default=None, help="Adapter to use, e.g. hci1 (default: system adapter)"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Scan and list nearby devices")
    scan.add_argument(
        "-t", "--timeout", type=float, default=BLEConfig.DEFAULT_SCAN_TIMEOUT,
        help="Scan duration in seconds",
    )

    services = sub.add_parser("services", help="Connect and print the GATT table")
    services.add_argument("address")

    read = sub.add_parser("read", help="Connect and read one characteristic")
    read.add_argument("address")
    read.add_argument("service")
    read.add_argument("characteristic")
    return parser


def configure_logging(verbosity: int) -> None:
    """Set up the global logging level: 0 warnings, 1 info, 2+ debug."""
    levels = [logging.WARNING, logging.INFO, logging.DEBUG]
    level = levels[min(verbosity, len(levels) - 1)]
    logging.basicConfig(
        level=level,
        format="%(asctime)s.%(msecs)03d %(levelname).3s %(name)s %(message)s",
        datefmt="%y-%m-%d %H:%M:%S",
    )
    logging.getLogger("blebridge").setLevel(level)


def run_until(
    manager: BluetoothManager, done: Callable[[], bool], timeout: Optional[float]
) -> bool:
    """
    Run the host loop, draining events once per frame, until `done()` or `timeout`.

    Returns:
        bool: True if `done()` became true.
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    while True:
        manager.process()
        if done():
            return True
        if deadline is not None and time.monotonic() >= deadline:
            return False
        _sleep(FRAME_INTERVAL)


def _initialize(manager: BluetoothManager) -> None:
    result: Dict[str, object] = {}
    manager.on(
        "adapter_initialized",
        lambda success, error: result.update(success=success, error=error),
    )
    manager.initialize()
    if not run_until(manager, lambda: bool(result), BLEConfig.CONNECTION_TIMEOUT):
        raise ScriptError("Timed out initializing the Bluetooth adapter", 2)
    if not result["success"]:
        raise ScriptError(f"Bluetooth adapter unavailable: {result['error']}", 2)


def _connect(manager: BluetoothManager, address: str):
    outcome: Dict[str, object] = {}
    device = manager.connect_device(address)
    if device is None:
        raise ScriptError("Adapter not ready", 2)
    device.on("connected", lambda: outcome.update(ok=True))
    device.on("connection_failed", lambda error: outcome.update(ok=False, error=error))
    if not run_until(manager, lambda: bool(outcome), BLEConfig.CONNECTION_TIMEOUT + 1.0):
        raise ScriptError(f"Timed out connecting to {address}", 3)
    if not outcome["ok"]:
        raise ScriptError(f"Could not connect to {address}: {outcome['error']}", 3)
    return device


def _discover(manager: BluetoothManager, device) -> List[Dict]:
    services: List[Dict] = []
    failure: Dict[str, str] = {}
    done = {"flag": False}

    def _on_services(result):
        services.extend(result)
        done["flag"] = True

    def _on_failed(operation, error):
        failure[operation] = error
        done["flag"] = True

    device.on("services_discovered", _on_services)
    device.on("operation_failed", _on_failed)
    device.discover_services()
    if not run_until(manager, lambda: done["flag"], BLEConfig.GATT_IO_TIMEOUT * 3):
        raise ScriptError("Timed out discovering services", 4)
    device.off("services_discovered", _on_services)
    device.off("operation_failed", _on_failed)
    if failure:
        raise ScriptError(f"Service discovery failed: {failure}", 4)
    return services


def cmd_scan(manager: BluetoothManager, args) -> None:
    ended = {"flag": False}
    manager.on("scan_stopped", lambda _info: ended.update(flag=True))
    manager.start_scan(args.timeout)
    run_until(manager, lambda: ended["flag"], max(args.timeout, 0) + 5.0)

    rows = [
        {
            "Address": info["address"],
            "Name": info["name"],
            "RSSI": info["rssi"],
            "Services": len(info["services"]),
        }
        for info in sorted(
            manager.get_discovered_devices(),
            key=lambda d: d["rssi"] if d["rssi"] is not None else -999,
            reverse=True,
        )
    ]
    if not rows:
        print("No devices found")
        return
    print(tabulate(rows, headers="keys", missingval="N/A", tablefmt="fancy_grid"))


def cmd_services(manager: BluetoothManager, args) -> None:
    device = _connect(manager, args.address)
    rows = []
    for service in _discover(manager, device):
        for characteristic in service["characteristics"]:
            props = characteristic["properties"]
            rows.append(
                {
                    "Service": service["uuid"],
                    "Characteristic": characteristic["uuid"],
                    "Properties": ", ".join(name for name, flag in props.items() if flag),
                }
            )
    print(tabulate(rows, headers="keys", missingval="N/A", tablefmt="fancy_grid"))


def cmd_read(manager: BluetoothManager, args) -> None:
    device = _connect(manager, args.address)
    _discover(manager, device)
    result: Dict[str, object] = {}
    device.on("characteristic_read", lambda uuid, data: result.update(uuid=uuid, data=data))
    device.on("operation_failed", lambda op, error: result.update(error=error))
    device.read_characteristic(args.service, args.characteristic)
    if not run_until(manager, lambda: bool(result), BLEConfig.GATT_IO_TIMEOUT + 1.0):
        raise ScriptError("Timed out reading characteristic", 5)
    if "error" in result:
        raise ScriptError(f"Read failed: {result['error']}", 5)
    data = result["data"]
    print(tabulate([[result["uuid"], data.hex(), len(data)]], headers=["UUID", "Hex", "Length"]))


COMMANDS = {"scan": cmd_scan, "services": cmd_services, "read": cmd_read}


def main(argv=None) -> int:
    """Main entry point for the demo host."""
    if argv is None:
        argv = sys.argv[1:]

    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    manager = BluetoothManager(BleakTransport(adapter=args.adapter), debug=args.verbose >= 2)
    manager.on("error_occurred", lambda message: logger.error("%s", message))
    try:
        _initialize(manager)
        COMMANDS[args.command](manager, args)
    except ScriptError as exc:
        print(f"ERROR: {exc.msg}", file=sys.stderr)
        return exc.code
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 1
    finally:
        manager.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
