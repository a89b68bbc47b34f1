import logging
from typing import Optional

import requests
from flask import Flask

from seriesdeck.config import ArchiveConfig
from seriesdeck.ingestor import Ingestor
from seriesdeck.loader import CollectionLoader

from .config import ServerConfig

logger = logging.getLogger(__name__)


def create_app(config: Optional[ServerConfig] = None,
			   archive_config: Optional[ArchiveConfig] = None,
			   session: Optional[requests.Session] = None) -> Flask:
	"""Create and configure the Flask application."""
	if config is None:
		config = ServerConfig()
	if archive_config is None:
		archive_config = ArchiveConfig.from_env()
	
	app = Flask(__name__)
	
	loader = CollectionLoader.from_config(archive_config, session=session)
	
	# Configure app
	app.config["SECRET_KEY"] = config.secret_key
	app.config["MAX_CONTENT_LENGTH"] = config.max_upload_size
	app.config["SERIESDECK_CONFIG"] = config
	app.config["ARCHIVE_CONFIG"] = archive_config
	app.config["SERIESDECK_LOADER"] = loader
	app.config["SERIESDECK_INGESTOR"] = Ingestor(loader.fetcher)
	
	# Register blueprints
	from .routes.api import api_bp
	
	app.register_blueprint(api_bp, url_prefix="/api")
	
	if config.load_on_start:
		loader.refresh()
	
	logger.info(f"seriesdeck server initialized (archive: {archive_config.base_url})")
	
	return app


def run_server(config: Optional[ServerConfig] = None, archive_config: Optional[ArchiveConfig] = None):
	"""Run the seriesdeck web server."""
	if config is None:
		config = ServerConfig()
	
	app = create_app(config, archive_config)
	
	logger.info(f"Starting seriesdeck server on http://{config.host}:{config.port}")
	
	app.run(
		host=config.host,
		port=config.port,
		debug=config.debug,
		threaded=True
	)
