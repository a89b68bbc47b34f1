import argparse
import json
import logging
from seriesdeck.config import ArchiveConfig
from seriesdeck.loader import CollectionLoader
from seriesdeck.logger import setup_logging
from seriesdeck_server.config import ServerConfig
from seriesdeck_server.server import run_server

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080


def build_archive_config(args) -> ArchiveConfig:
	"""Defaults, then config file, then environment, then flags."""
	if args.config:
		config = ArchiveConfig.load(args.config)
	else:
		config = ArchiveConfig()
	config.apply_env()
	
	if args.archive_url:
		config.base_url = args.archive_url
	if args.viewer_root:
		config.viewer_root = args.viewer_root
	return config


def main():
	parser = argparse.ArgumentParser(description="Imaging series browser")
	parser.add_argument("--archive-url", "-a", default=None, help="Archive REST base URL")
	parser.add_argument("--viewer-root", default=None, help="Viewer base URL")
	parser.add_argument("--config", "-c", default=None, help="Archive config JSON file")
	parser.add_argument("--host", default=DEFAULT_HOST, help="Server host")
	parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Server port")
	parser.add_argument("--list", action="store_true", help="Print all series rows as JSON and exit")
	parser.add_argument("--debug", action="store_true", help="Enable debug logging")
	
	args = parser.parse_args()
	
	setup_logging(level=logging.DEBUG if args.debug else logging.INFO)
	
	archive_config = build_archive_config(args)
	if not archive_config.validate():
		raise SystemExit(2)
	
	try:
		if args.list:
			rows = CollectionLoader.from_config(archive_config).refresh()
			print(json.dumps([row.to_dict() for row in rows], indent=2))
			return
		
		logging.info(f"Archive: {archive_config.base_url}")
		logging.info("Press Ctrl+C to stop")
		run_server(ServerConfig(host=args.host, port=args.port, debug=args.debug), archive_config)
	
	except KeyboardInterrupt:
		logging.info("Shutting down...")


if __name__ == "__main__":
	main()
