"""
Command Line Interface for capsize
Main entry point with argument parsing and command execution
"""

import argparse
import atexit
import json
import os
import re
import signal
import sys
import traceback
from typing import Any, Dict, List, Optional

import yaml

from .config_manager import ConfigManager
from .error_handler import CapsizeError, ErrorHandler
from .hardware_detector import HardwareDetector
from .logger_setup import get_logger, setup_logging
from .media_compressor import CompressionMode, MediaCompressor
from .quality_boundary_detector import DetectorConfig, QualityBoundaryDetector
from .temp_file_manager import TempFileManager

logger = None  # Will be initialized after logging setup

SIZE_PATTERN = re.compile(r"\s*(\d+(?:\.\d+)?)\s*([Kk][Bb]?|[Mm][Bb]?|[Gg][Bb]?)?\s*")
SIZE_MULTIPLIERS = {'k': 1024, 'm': 1024 ** 2, 'g': 1024 ** 3}


def parse_size_to_bytes(size_str: str) -> int:
    """Parse a human-readable size string into bytes.

    Rules: bare numbers => MB; supports KB/MB/GB (case-insensitive). Examples: 8, 500KB, 7.5MB.
    """
    match = SIZE_PATTERN.fullmatch(str(size_str))
    if not match:
        raise argparse.ArgumentTypeError(f"Invalid size format: {size_str}")
    value = float(match.group(1))
    unit = (match.group(2) or 'm')[0].lower()
    size = int(value * SIZE_MULTIPLIERS[unit])
    if size <= 0:
        raise argparse.ArgumentTypeError(f"Size must be positive: {size_str}")
    return size


class CapsizeCLI:
    def __init__(self):
        self.config: Optional[ConfigManager] = None
        self.hardware: Optional[HardwareDetector] = None
        self.compressor: Optional[MediaCompressor] = None
        self.error_handler = ErrorHandler()
        self.shutdown_requested = False

    def main(self, argv: Optional[List[str]] = None) -> int:
        """Main entry point"""
        try:
            args = self._parse_arguments(argv)

            global logger
            effective_level = 'DEBUG' if args.debug else args.log_level
            logging_config = None
            if args.config_dir and os.path.exists(os.path.join(args.config_dir, 'logging.yaml')):
                logging_config = os.path.join(args.config_dir, 'logging.yaml')
            logger = setup_logging(logging_config, log_level=effective_level, logs_dir=args.logs_dir)

            self._setup_signal_handlers()
            atexit.register(TempFileManager.cleanup)

            self._initialize_components(args)
            return self._execute_command(args)

        except KeyboardInterrupt:
            if logger:
                logger.info("Operation cancelled by user")
            TempFileManager.cleanup()
            return 1
        except CapsizeError as e:
            if logger:
                logger.error(str(e))
            print(f"Error: {e}", file=sys.stderr)
            return 1

    def _setup_signal_handlers(self):
        """Remove registered temporary files before exiting on SIGINT/SIGTERM"""
        def signal_handler(signum, frame):
            try:
                signal_name = signal.Signals(signum).name
            except ValueError:
                signal_name = str(signum)

            if self.shutdown_requested:
                print(f"\n{signal_name} received again. Exiting immediately...")
                os._exit(1)

            self.shutdown_requested = True
            logger.info(f"Received {signal_name} signal, cleaning up "
                        f"{TempFileManager.get_temp_count()} temporary files")
            print(f"\nReceived {signal_name} signal, cleaning up... (Press Ctrl+C again to force quit)")
            TempFileManager.cleanup()
            sys.exit(1)

        signal.signal(signal.SIGINT, signal_handler)
        if hasattr(signal, 'SIGTERM'):
            signal.signal(signal.SIGTERM, signal_handler)

    def _parse_arguments(self, argv: Optional[List[str]] = None) -> argparse.Namespace:
        """Parse command line arguments"""
        parser = argparse.ArgumentParser(
            prog='capsize',
            description="capsize - Compress media to fit a byte-size ceiling",
            epilog="Examples:\n"
                   "  %(prog)s compress clip.mp4 -t 8MB\n"
                   "  %(prog)s compress talk.webm -t 25MB -m segmented --detect-boundaries\n"
                   "  %(prog)s compress photo.jpg banner.png -t 500KB -o out/\n"
                   "  %(prog)s detect talk.webm\n"
                   "  %(prog)s hw\n",
            formatter_class=argparse.RawDescriptionHelpFormatter
        )

        # Global options
        parser.add_argument('--config-dir', default=None,
                            help='Directory with compression.yaml/logging.yaml overrides (default: packaged config)')
        parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                            default=None, help='Override logging level (default: WARNING to console, DEBUG to file)')
        parser.add_argument('-v', '--debug', action='store_true',
                            help='Enable verbose debug output in console and logs')
        parser.add_argument('--logs-dir', default='logs', help='Directory for log files (default: logs)')
        parser.add_argument('--temp-dir', help='Temporary directory for encode attempts')
        parser.add_argument('--force-software', action='store_true',
                            help='Force software encoding (bypass hardware acceleration)')

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        compress_parser = subparsers.add_parser('compress', aliases=['c'],
                                                help='Compress one or more files to a target size')
        compress_parser.add_argument('inputs', nargs='+', help='Input media file(s)')
        compress_parser.add_argument('-t', '--target-size', type=parse_size_to_bytes, required=True,
                                     metavar='SIZE', help='Size ceiling per output (e.g. 8MB, 500KB; bare numbers are MB)')
        compress_parser.add_argument('-m', '--mode', choices=[m.value for m in CompressionMode],
                                     default=CompressionMode.SINGLE.value,
                                     help='single output, or split into parts that each fit (default: single)')
        compress_parser.add_argument('--detect-boundaries', action='store_true',
                                     help='Split at detected quality changes (segmented mode, WebM)')
        compress_parser.add_argument('-o', '--output-dir', help='Output directory (default: output)')
        compress_parser.add_argument('-j', '--max-concurrent', type=int, metavar='N',
                                     help='Maximum segment encodes running at once')
        compress_parser.add_argument('--stats', action='store_true',
                                     help='Print cache statistics after the batch')
        compress_parser.add_argument('--rate-control', choices=['bitrate', 'quality'],
                                     help='bitrate: one encode at the estimated bitrate; '
                                          'quality: search a constant-quality setting (default: config)')

        probe_parser = subparsers.add_parser('probe', help='Show media metadata')
        probe_parser.add_argument('input', help='Input media file')

        detect_parser = subparsers.add_parser('detect', help='List quality changes in a video')
        detect_parser.add_argument('input', help='Input media file')

        subparsers.add_parser('hardware-info', aliases=['hw'], help='Show encoder and system information')

        config_parser = subparsers.add_parser('config', aliases=['cfg'], help='Configuration management')
        config_subparsers = config_parser.add_subparsers(dest='config_action')
        config_subparsers.add_parser('show', help='Show current configuration')
        config_subparsers.add_parser('validate', help='Validate configuration files')

        args = parser.parse_args(argv)
        if not args.command:
            parser.print_help()
            parser.exit(1)
        return args

    def _initialize_components(self, args: argparse.Namespace):
        """Initialize configuration and the services the command needs"""
        self.config = ConfigManager(args.config_dir)
        self.config.update_from_args({
            'compression.temp_dir': args.temp_dir,
            'compression.output_dir': getattr(args, 'output_dir', None),
            'compression.segmentation.max_concurrent': getattr(args, 'max_concurrent', None),
            'compression.rate_control': getattr(args, 'rate_control', None),
        })

        if args.command in ('compress', 'c', 'hardware-info', 'hw'):
            self.hardware = HardwareDetector()
            if args.force_software:
                self.hardware.force_software_encoding()

        if args.command in ('compress', 'c', 'probe'):
            if not self.config.validate_config():
                raise CapsizeError("Configuration validation failed", stage='config')
            self.compressor = MediaCompressor(
                self.config,
                hardware=self.hardware or HardwareDetector(probe_encoders=False),
                show_progress=not args.debug,
            )

    def _execute_command(self, args: argparse.Namespace) -> int:
        if args.command in ('compress', 'c'):
            return self._compress(args)
        if args.command == 'probe':
            asset = self.compressor.probe_service.probe(args.input)
            self._print_json(asset.to_dict())
            return 0
        if args.command == 'detect':
            detector = QualityBoundaryDetector(DetectorConfig.from_config(self.config))
            events = detector.detect(args.input)
            self._print_json([event.to_dict() for event in events])
            return 0
        if args.command in ('hardware-info', 'hw'):
            print(self.hardware.get_system_report())
            return 0
        if args.command in ('config', 'cfg'):
            return self._handle_config_command(args)
        return 1

    def _compress(self, args: argparse.Namespace) -> int:
        mode = CompressionMode(args.mode)
        payloads: List[Dict[str, Any]] = []
        successful = 0
        self.error_handler.reset()

        for input_path in args.inputs:
            if self.shutdown_requested:
                break
            try:
                result = self.compressor.compress_file(input_path, args.target_size, mode,
                                                       args.detect_boundaries)
            except (CapsizeError, OSError) as e:
                error = self.error_handler.handle_error(e, input_path, continue_processing=len(args.inputs) > 1)
                payloads.append({'input': input_path, 'error': error.message,
                                 'category': error.category.value})
                continue
            successful += 1
            payload = result.to_dict()
            payload['input'] = input_path
            payloads.append(payload)

        if len(args.inputs) > 1:
            self.error_handler.log_batch_summary(len(args.inputs), successful)

        output: Any = payloads[0] if len(payloads) == 1 else payloads
        if args.stats:
            output = {'results': payloads, 'cache': self.compressor.cache_stats()}
        self._print_json(output)
        return 0 if successful == len(args.inputs) else 1

    def _handle_config_command(self, args: argparse.Namespace) -> int:
        """Handle configuration commands"""
        if args.config_action == 'show':
            print(yaml.dump(self.config.config, default_flow_style=False, indent=2))
            return 0
        if args.config_action == 'validate':
            valid = self.config.validate_config()
            print("Configuration is valid" if valid else "Configuration is invalid; see logs for details")
            return 0 if valid else 1
        logger.error("Config command requires an action (show|validate)")
        return 1

    @staticmethod
    def _print_json(data: Any) -> None:
        print(json.dumps(data, indent=2, default=str))


def main(argv: Optional[List[str]] = None):
    """Entry point for the CLI application"""
    cli = CapsizeCLI()
    try:
        code = cli.main(argv)
    except Exception as e:
        active = logger or get_logger()
        active.error(f"Unexpected error: {e}")
        active.debug(traceback.format_exc())
        print(f"Error: {e}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == '__main__':
    main()
