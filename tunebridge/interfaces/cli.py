import argparse
import json
import logging
import sys
import time
from typing import Callable, List, Optional

from dotenv import load_dotenv

from tunebridge.application.resolution import Resolution, ResolutionOrchestrator
from tunebridge.crosscutting.config import ConfigError, SecretManager, get_secret_manager
from tunebridge.crosscutting.logging import setup_logging
from tunebridge.crosscutting.metrics import MetricsCollector
from tunebridge.domain.entities import Service
from tunebridge.interfaces.bootstrap import build_extractor, build_orchestrator


class CLI:
    """Command Line Interface for tunebridge."""

    def __init__(self,
                 manager: Optional[SecretManager] = None,
                 orchestrator_factory: Optional[Callable[..., ResolutionOrchestrator]] = None):
        """Initialize CLI.

        Args:
            manager: Configuration source; the global one when omitted
            orchestrator_factory: Builds the orchestrator from (manager, metrics)
        """
        self._manager = manager
        self._orchestrator_factory = orchestrator_factory or build_orchestrator
        self.parser = self._create_parser()
        self.metrics = MetricsCollector()
        self._start_time = None

    @property
    def manager(self) -> SecretManager:
        if self._manager is None:
            self._manager = get_secret_manager()
        return self._manager

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        parser = argparse.ArgumentParser(
            prog='tunebridge',
            description='Resolve music links across Spotify, Tidal and YouTube'
        )
        parser.add_argument(
            '--log-level',
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            default='WARNING',
            help='Set logging level'
        )
        parser.add_argument(
            '--log-format',
            choices=['text', 'json'],
            default='text',
            help='Log line format (default: text)'
        )

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        resolve_parser = subparsers.add_parser('resolve', help='Resolve every link in a message')
        resolve_parser.add_argument('text', help="Message text, or '-' to read stdin")
        resolve_parser.add_argument(
            '--expand-albums',
            action='store_true',
            help='Replace album links by their tracks'
        )
        resolve_parser.add_argument(
            '--json',
            action='store_true',
            help='Print the resolution as JSON'
        )
        resolve_parser.add_argument(
            '--metrics-file',
            help='Write resolution metrics to this JSON file'
        )

        extract_parser = subparsers.add_parser('extract', help='List links found in a message')
        extract_parser.add_argument('text', help="Message text, or '-' to read stdin")

        expand_parser = subparsers.add_parser('expand', help='Expand a short link')
        expand_parser.add_argument('url', help='Short link to expand')

        subparsers.add_parser('config', help='Show configuration status')

        return parser

    def _read_text(self, value: str) -> str:
        return sys.stdin.read() if value == '-' else value

    def _print_resolution(self, resolution: Resolution, orchestrator: ResolutionOrchestrator,
                          expand_albums: bool, as_json: bool) -> None:
        if expand_albums:
            for service in list(resolution.resources):
                resolution.resources[service] = orchestrator.expand_tracks(resolution, service)

        if as_json:
            print(json.dumps(resolution.to_dict(), indent=2, ensure_ascii=False))
            return

        if not resolution.resources and not resolution.failures:
            print("No links found")
            return

        for service, refs in resolution.resources.items():
            print(f"{service.value}:")
            for ref in refs:
                print(f"  {ref.url}")
        if resolution.failures:
            print("failed:")
            for failure in resolution.failures:
                target = f" -> {failure.target.value}" if failure.target else ""
                print(f"  {failure.ref.uri}{target} [{failure.stage}] {failure.reason}")

    def _resolve(self, args: argparse.Namespace) -> None:
        """Resolve a message into every configured catalog."""
        orchestrator = self._orchestrator_factory(self.manager, self.metrics)
        with self.metrics.timed():
            resolution = orchestrator.resolve_message(self._read_text(args.text))
        self.metrics.finish()

        self._print_resolution(resolution, orchestrator, args.expand_albums, args.json)
        if args.metrics_file:
            self.metrics.save_to_file(args.metrics_file)

    def _extract(self, args: argparse.Namespace) -> None:
        """Print the resources linked in a message without contacting any catalog."""
        extractor = build_extractor(self.manager, self.metrics)
        found = extractor.extract_all(self._read_text(args.text))
        if not found:
            print("No links found")
            return
        for service, refs in found.items():
            for ref in refs:
                print(f"{service.value}\t{ref.kind.value}\t{ref.native_id}")

    def _expand(self, args: argparse.Namespace) -> None:
        extractor = build_extractor(self.manager, self.metrics)
        print(extractor.resolver.resolve(args.url))

    def _show_config(self, args: argparse.Namespace) -> None:
        """Print which catalogs are configured."""
        summary = self.manager.get_config_summary()
        print(f"Config directory: {summary['config_dir']}")
        for service in Service:
            status = "configured" if summary['services'].get(service.value) else "missing credentials"
            print(f"  {service.value}: {status}")
        print(f"Page delay: {summary['page_delay_ms']}ms")
        print(f"Workers: {summary['max_workers']}")
        print(f"Search limit: {summary['search_limit']}")

    def run(self, argv: Optional[List[str]] = None) -> None:
        """Run the CLI."""
        self._start_time = time.time()
        args = self.parser.parse_args(argv)

        if not args.command:
            self.parser.print_help()
            sys.exit(1)

        setup_logging(args.log_level, structured=args.log_format == 'json')
        logger = logging.getLogger(__name__)

        commands = {
            'resolve': self._resolve,
            'extract': self._extract,
            'expand': self._expand,
            'config': self._show_config,
        }
        try:
            commands[args.command](args)
        except ConfigError as e:
            logger.error(f"Configuration error: {e}")
            print(f"Configuration error: {e}", file=sys.stderr)
            sys.exit(1)
        except KeyboardInterrupt:
            logger.warning("Operation cancelled by user")
            sys.exit(130)
        except Exception as e:
            logger.error(f"CLI error: {e}")
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        finally:
            logger.debug(f"CLI execution time: {time.time() - self._start_time:.2f}s")


def main():
    """Main entry point."""
    load_dotenv()
    cli = CLI()
    cli.run()


if __name__ == '__main__':
    main()
