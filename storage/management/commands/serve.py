import logging

from django.core.exceptions import ImproperlyConfigured
from django.core.management.base import BaseCommand, CommandError
from django.core.servers.basehttp import run
from django.core.wsgi import get_wsgi_application

from storage.conf import load_store_config, read_config_file
from storage.store import install_store

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Serve the key-value store on the configured port, one thread per request."

    def add_arguments(self, parser):
        parser.add_argument(
            "--addr",
            default="127.0.0.1",
            help="Address to bind to",
        )
        parser.add_argument(
            "--config",
            help="Path to an INI file with a [keyvaluestore] section "
            "(defaults to the KVSTORE / KVSTORE_CONFIG_FILE settings)",
        )

    def handle(self, *args, **options):
        # The store must exist before the socket is bound
        try:
            if options["config"]:
                config = read_config_file(options["config"])
            else:
                config = load_store_config()
        except ImproperlyConfigured as exc:
            raise CommandError(f"Invalid key-value store configuration: {exc}") from exc
        install_store(config)

        def on_bind(server_port):
            logger.info(f"Server started listening on port {server_port}")

        try:
            run(
                options["addr"],
                config.port,
                get_wsgi_application(),
                threading=True,
                on_bind=on_bind,
            )
        except KeyboardInterrupt:
            logger.info("Shutdown requested")
