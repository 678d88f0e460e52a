from __future__ import annotations

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from tunebridge.application.extraction import LinkExtractor
from tunebridge.application.matching import ResourceMatcher
from tunebridge.application.pagination import CatalogPaginator
from tunebridge.crosscutting.logging import (
    CorrelationContext, log_resolution_complete, log_resolution_start,
    log_resource_failure,
)
from tunebridge.domain.entities import HydratedResource, Kind, ResourceRef, Service
from tunebridge.domain.errors import NotFoundError, TransportError
from tunebridge.domain.ports import Catalog


logger = logging.getLogger(__name__)

MAX_WORKERS = 4


@dataclass(frozen=True)
class ResolutionFailure:
    """A resource, or one of its target catalogs, that produced nothing."""

    ref: ResourceRef
    stage: str
    reason: str
    target: Optional[Service] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ref": self.ref.to_dict(),
            "stage": self.stage,
            "reason": self.reason,
            "target": self.target.value if self.target else None,
        }


@dataclass
class Resolution:
    """Resources of one message grouped by the catalog they belong to."""

    message_id: str
    resources: Dict[Service, List[ResourceRef]] = field(default_factory=dict)
    failures: List[ResolutionFailure] = field(default_factory=list)
    strategies: Dict[str, str] = field(default_factory=dict)

    def refs_for(self, service: Service) -> List[ResourceRef]:
        return list(self.resources.get(service, []))

    @property
    def resolved_count(self) -> int:
        return sum(len(refs) for refs in self.resources.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message_id": self.message_id,
            "resources": {
                service.value: [ref.to_dict() for ref in refs]
                for service, refs in self.resources.items()
            },
            "failures": [failure.to_dict() for failure in self.failures],
        }


@dataclass
class _RefOutcome:
    ref: ResourceRef
    hydrated: bool
    matches: List[tuple] = field(default_factory=list)
    failures: List[ResolutionFailure] = field(default_factory=list)


class ResolutionOrchestrator:
    """Extracts, hydrates and matches every resource linked in a message.

    Each extracted resource is handled independently: a hydration or match
    failure is recorded on the result and never stops its siblings.
    """

    def __init__(self,
                 extractor: LinkExtractor,
                 catalogs: Mapping[Service, Catalog],
                 matcher: ResourceMatcher,
                 paginator: Optional[CatalogPaginator] = None,
                 max_workers: int = MAX_WORKERS,
                 metrics=None):
        self.extractor = extractor
        self.catalogs = dict(catalogs)
        self.matcher = matcher
        self.paginator = paginator or matcher.paginator
        self.max_workers = max(1, max_workers)
        self.metrics = metrics

    def extract(self, text: str) -> List[ResourceRef]:
        """Return the refs of configured catalogs linked in ``text``, in message order."""
        return self.extractor.extract_in_order(text, services=list(self.catalogs))

    def resolve_message(self, text: str, message_id: Optional[str] = None) -> Resolution:
        """Resolve every linked resource of ``text`` into every configured catalog."""
        message_id = message_id or uuid.uuid4().hex[:12]
        refs = self.extract(text)
        log_resolution_start(logger, message_id, [s.value for s in self.catalogs], len(refs))
        if self.metrics is not None:
            self.metrics.record_message(len(refs))

        resolution = Resolution(message_id=message_id)
        if not refs:
            log_resolution_complete(logger, message_id, resolved=0, failed=0)
            return resolution

        def work(ref: ResourceRef) -> _RefOutcome:
            with CorrelationContext(message_id=message_id, service=ref.service.value):
                return self._resolve_ref(ref)

        workers = min(self.max_workers, len(refs))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            # map() yields in submission order
            outcomes = list(executor.map(work, refs))

        for outcome in outcomes:
            if outcome.hydrated:
                resolution.resources.setdefault(outcome.ref.service, []).append(outcome.ref)
            for target, match, strategy in outcome.matches:
                resolution.resources.setdefault(target, []).append(match)
                resolution.strategies[match.uri] = strategy
            resolution.failures.extend(outcome.failures)

        log_resolution_complete(logger, message_id,
                                resolved=resolution.resolved_count,
                                failed=len(resolution.failures))
        return resolution

    def hydrate(self, ref: ResourceRef) -> HydratedResource:
        catalog = self.catalogs.get(ref.service)
        if catalog is None:
            raise NotFoundError(f"No catalog configured for {ref.service.value}")
        if ref.kind == Kind.ALBUM:
            return catalog.get_album(ref.native_id)
        return catalog.get_track(ref.native_id)

    def _hydration_failed(self, ref: ResourceRef, reason: str) -> _RefOutcome:
        if self.metrics is not None:
            self.metrics.record_hydration_failure()
        log_resource_failure(logger, ref.uri, "hydrate", reason)
        return _RefOutcome(ref=ref, hydrated=False,
                           failures=[ResolutionFailure(ref, "hydrate", reason)])

    def _match_failed(self, ref: ResourceRef, target: Service, reason: str) -> ResolutionFailure:
        if self.metrics is not None:
            self.metrics.record_match_failure()
        log_resource_failure(logger, ref.uri, "match", reason, target=target.value)
        return ResolutionFailure(ref, "match", reason, target=target)

    def _resolve_ref(self, ref: ResourceRef) -> _RefOutcome:
        try:
            source = self.hydrate(ref)
        except (TransportError, NotFoundError) as e:
            return self._hydration_failed(ref, str(e))
        except Exception as e:
            # isolated per resource; siblings keep resolving
            logger.exception(f"Unexpected error hydrating {ref.uri}")
            return self._hydration_failed(ref, f"{type(e).__name__}: {e}")

        outcome = _RefOutcome(ref=ref, hydrated=True)
        for service, catalog in self.catalogs.items():
            if service == ref.service:
                continue
            try:
                result = self.matcher.find_match(source, catalog)
            except (TransportError, NotFoundError) as e:
                outcome.failures.append(self._match_failed(ref, service, str(e)))
                continue
            except Exception as e:
                logger.exception(f"Unexpected error matching {ref.uri} on {service.value}")
                outcome.failures.append(self._match_failed(ref, service, f"{type(e).__name__}: {e}"))
                continue

            if result.matched:
                if self.metrics is not None:
                    self.metrics.record_match(result.strategy)
                logger.debug(f"{ref.uri} -> {result.ref.uri} via {result.strategy}")
                outcome.matches.append((service, result.ref, result.strategy))
            else:
                if self.metrics is not None:
                    self.metrics.record_no_match()
                log_resource_failure(logger, ref.uri, "match", "no_match", target=service.value)
                outcome.failures.append(ResolutionFailure(ref, "match", "no_match", target=service))
        return outcome

    def expand_tracks(self, resolution: Resolution, service: Service) -> List[ResourceRef]:
        """Return the service's refs with every album replaced by its tracks.

        An album whose listing fails is kept as a single unexpanded ref.
        """
        expanded: List[ResourceRef] = []
        for ref in resolution.refs_for(service):
            if ref.kind != Kind.ALBUM:
                expanded.append(ref)
                continue
            try:
                track_ids = self.paginator.collect_all(service, ref.native_id)
            except (TransportError, NotFoundError) as e:
                log_resource_failure(logger, ref.uri, "expand", str(e))
                expanded.append(ref)
                continue
            expanded.extend(ResourceRef(service, Kind.TRACK, track_id) for track_id in track_ids)
        return expanded
