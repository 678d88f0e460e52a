import logging
from typing import Dict, Optional

from tunebridge.application.extraction import LinkExtractor
from tunebridge.application.matching import ResourceMatcher
from tunebridge.application.pagination import CatalogPaginator
from tunebridge.application.resolution import ResolutionOrchestrator
from tunebridge.application.shortlinks import ShortlinkResolver
from tunebridge.crosscutting.config import ConfigError, SecretManager
from tunebridge.crosscutting.metrics import MetricsCollector
from tunebridge.domain.entities import Service
from tunebridge.domain.ports import Catalog
from tunebridge.infrastructure.http_fetcher import RequestsFetcher
from tunebridge.infrastructure.providers.spotify import SpotifyCatalog
from tunebridge.infrastructure.providers.tidal import TidalCatalog
from tunebridge.infrastructure.providers.youtube import YoutubeCatalog


logger = logging.getLogger(__name__)


def build_catalog(service: Service, manager: SecretManager) -> Catalog:
    """Create the catalog adapter for one service from its configured credentials."""
    config = manager.get_service_config(service)
    search_limit = manager.get_int('TUNEBRIDGE_SEARCH_LIMIT')
    timeout = manager.get_float('TUNEBRIDGE_HTTP_TIMEOUT')

    if service == Service.SPOTIFY:
        return SpotifyCatalog(config['client_id'], config['client_secret'],
                              search_limit=search_limit, timeout=timeout)
    if service == Service.TIDAL:
        return TidalCatalog(config['client_id'], config['client_secret'],
                            country_code=config['country_code'],
                            search_limit=search_limit, timeout=timeout)
    if service == Service.YOUTUBE:
        return YoutubeCatalog(config['api_key'], search_limit=search_limit, timeout=timeout)
    raise ConfigError(f"Unsupported service: {service}")


def build_catalogs(manager: SecretManager) -> Dict[Service, Catalog]:
    """Create an adapter for every service whose credentials are complete."""
    services = manager.enabled_services()
    if not services:
        raise ConfigError("No catalog is configured; set credentials for at least one service")
    return {service: build_catalog(service, manager) for service in services}


def build_extractor(manager: SecretManager, metrics: Optional[MetricsCollector] = None) -> LinkExtractor:
    fetcher = RequestsFetcher(timeout=manager.get_float('TUNEBRIDGE_HTTP_TIMEOUT'))
    return LinkExtractor(resolver=ShortlinkResolver(fetcher, metrics=metrics))


def build_orchestrator(manager: SecretManager,
                       metrics: Optional[MetricsCollector] = None) -> ResolutionOrchestrator:
    """Wire extractor, paginator, matcher and orchestrator from configuration."""
    catalogs = build_catalogs(manager)
    paginator = CatalogPaginator(catalogs,
                                 page_delay_ms=manager.get_int('TUNEBRIDGE_PAGE_DELAY_MS'),
                                 metrics=metrics)
    matcher = ResourceMatcher(paginator)
    logger.info(f"Configured catalogs: {', '.join(s.value for s in catalogs)}")
    return ResolutionOrchestrator(
        extractor=build_extractor(manager, metrics),
        catalogs=catalogs,
        matcher=matcher,
        paginator=paginator,
        max_workers=manager.get_int('TUNEBRIDGE_MAX_WORKERS'),
        metrics=metrics,
    )
