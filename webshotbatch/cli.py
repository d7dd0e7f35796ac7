r"""
webshotbatch - request screenshots of a list of URLs from a rendering server.

Usage:
    webshotbatch --file urls.txt --outputDir shots
    [--width 1024] [--height 768] [--delay 0] [--postfix _a] [--imageFormat png]
    [--useQueryParam name] [--concurrency 2] [--config config.yaml]
    [--report-csv results.csv] [--fail-fast]

Description:
    Reads one URL per line from --file. For each URL, asks the rendering server
    configured in config.yaml (server.host/port/pingPath/actionPath) for a
    screenshot and saves the returned bytes to --outputDir. At most
    --concurrency requests are in flight at once.

    The server is pinged with a HEAD request first; if it cannot be reached
    nothing is attempted. Responses above 299 are skipped. Network and disk
    errors fail only the URL they belong to, unless --fail-fast is given, in
    which case the first failure stops further dispatch and the run exits 1.
"""

import argparse
import logging
import os
import signal
import sys
import threading
from datetime import datetime
from functools import partial

from .config import DEFAULT_CONFIG_PATH, IMAGE_FORMATS, RunOptions, load_server_config
from .dispatcher import BoundedDispatcher
from .errors import WebShotBatchError
from .fetcher import FAILED, check_server_available, create_requests_session, fetch_screenshot
from .report import OutcomeReport

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


def positive_int(value):
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def non_negative_int(value):
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be zero or more, got {value}")
    return number


def positive_float(value):
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive number, got {value}")
    return number


def build_parser():
    parser = argparse.ArgumentParser(
        prog="webshotbatch",
        description="Batch screenshot client for a remote rendering server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    # Basic parameters
    parser.add_argument("--file", required=True, help="Path to a file with URLs (one per line)")
    parser.add_argument("--outputDir", "--output-dir", dest="output_dir", required=True,
                        help="Directory where screenshots are written")
    parser.add_argument("--concurrency", type=positive_int, default=2, help="Number of concurrent requests")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH,
                        help="YAML file with the rendering server settings")

    # Screenshot options
    shot_group = parser.add_argument_group("Screenshot Options")
    shot_group.add_argument("--width", type=positive_int, default=1024, help="Width of a screenshot")
    shot_group.add_argument("--height", type=positive_int, default=768, help="Height of a screenshot")
    shot_group.add_argument("--delay", type=non_negative_int, default=0,
                            help="Seconds between full page load and taking a screenshot")
    shot_group.add_argument("--imageFormat", "--image-format", dest="image_format", choices=IMAGE_FORMATS,
                            default="jpeg", help="Format of a screenshot")
    shot_group.add_argument("--postfix", default="", help="Appended to every file name before the extension")
    shot_group.add_argument("--useQueryParam", "--use-query-param", dest="use_query_param", default="",
                            help="Use this query parameter of the URL as the file name")

    # Run control
    run_group = parser.add_argument_group("Run Options")
    run_group.add_argument("--http-timeout", type=positive_float, default=60.0,
                           help="Seconds to wait for the server on top of --delay")
    run_group.add_argument("--fail-fast", action="store_true",
                           help="Stop dispatching and exit 1 on the first network or disk failure")
    run_group.add_argument("--verify-ssl", dest="verify_ssl", action="store_true", default=True,
                           help="Verify the rendering server's TLS certificate (default)")
    run_group.add_argument("--no-verify-ssl", dest="verify_ssl", action="store_false",
                           help="Skip TLS certificate verification")
    run_group.add_argument("--log-dir", default="logs", help="Directory for run log files")
    run_group.add_argument("--report-csv", help="Append one CSV row per URL to this file")

    return parser


def setup_logging(log_dir):
    """Log to stdout and to a timestamped file under `log_dir`."""
    os.makedirs(log_dir, exist_ok=True)
    log_filename = os.path.join(log_dir, f"webshotbatch_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log")
    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] %(levelname)s: %(message)s",
        handlers=[
            logging.FileHandler(log_filename),
            logging.StreamHandler()
        ],
        force=True,
    )
    return log_filename


def install_signal_handlers(cancel):
    """
    Ctrl+C and SIGTERM stop further dispatch; in-flight requests finish.
    Python only allows signal handlers in the main thread, so elsewhere this
    does nothing and returns False.
    """
    if threading.current_thread() is not threading.main_thread():
        logging.info("Not on the main thread, signal handlers not installed")
        return False

    def signal_handler(sig, frame):
        if not cancel.is_set():
            logging.warning("Shutdown signal received. Finishing in-flight requests...")
        cancel.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    return True


def run(options, server, cancel, report=None):
    """
    Ping the server, then dispatch every URL in the input file.
    Returns the DispatchReport.
    """
    os.makedirs(options.output_dir, exist_ok=True)

    with create_requests_session(pool_size=options.concurrency, verify_ssl=options.verify_ssl) as session:
        check_server_available(server, session=session, timeout=options.http_timeout)

        def on_outcome(outcome):
            if report is not None:
                report.append(outcome)
            if options.fail_fast and outcome.status == FAILED and not cancel.is_set():
                logging.error(f"Aborting run after failure on {outcome.url} (--fail-fast)")
                cancel.set()

        dispatcher = BoundedDispatcher(
            options.concurrency,
            partial(fetch_screenshot, server.action_url, options=options, session=session),
            cancel=cancel,
            on_outcome=on_outcome,
        )
        return dispatcher.run(options.input_file)


def main(argv=None, cancel=None):
    args = build_parser().parse_args(argv)

    log_filename = setup_logging(args.log_dir)
    logging.info(f"Logging to {log_filename}")

    if cancel is None:
        cancel = threading.Event()
        install_signal_handlers(cancel)

    try:
        server = load_server_config(args.config)
        options = RunOptions.from_args(args)
        logging.info(f"Run options: {options}")
        report = OutcomeReport(args.report_csv) if args.report_csv else None
        result = run(options, server, cancel, report=report)
    except (WebShotBatchError, ValueError, OSError) as e:
        logging.error(str(e))
        return EXIT_ERROR

    logging.info(f"All done! {result.total} URLs in {result.duration:.1f} seconds: "
                 f"{result.saved} saved, {result.skipped} skipped, "
                 f"{result.failed} failed, {result.cancelled} cancelled")

    if options.fail_fast and result.failed:
        return EXIT_ERROR
    if cancel.is_set():
        return EXIT_INTERRUPTED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
