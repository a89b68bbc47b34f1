from dataclasses import dataclass, field
import os
import logging

logger = logging.getLogger(__name__)


@dataclass
class ServerConfig:
	"""Configuration for the seriesdeck web server."""
	host: str = "127.0.0.1"
	port: int = 8080
	debug: bool = False
	secret_key: str = field(default_factory=lambda: os.urandom(24).hex())
	max_upload_size: int = 1024 * 1024 * 1024  # 1GB, zip imports are large
	load_on_start: bool = False  # Otherwise the first /api/series call loads
	
	def __post_init__(self):
		if self.port <= 0 or self.port > 65535:
			logger.warning(f"Invalid port {self.port}, using 8080")
			self.port = 8080
