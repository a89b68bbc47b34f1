import logging, sys

def setup_logging(level = logging.INFO, quiet_http: bool = True):
	root_logger = logging.getLogger()
	root_logger.setLevel(level)

	# Re-running setup (tests, reloads) must not stack handlers
	for handler in list(root_logger.handlers):
		if getattr(handler, "_seriesdeck", False):
			root_logger.removeHandler(handler)

	handler = logging.StreamHandler(sys.stdout)
	handler._seriesdeck = True
	
	formatter = logging.Formatter(
		"[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
		datefmt="%H:%M:%S"
	)
	handler.setFormatter(formatter)
	root_logger.addHandler(handler)

	if quiet_http:
		# urllib3 logs every connection at DEBUG
		logging.getLogger("urllib3").setLevel(max(level, logging.INFO))
