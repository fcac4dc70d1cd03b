from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Optional

from ..media.cache import MediaUrlCache
from ..media.cloudinary_pipeline import CloudinaryMediaPipeline, EvolutionAccess
from ..media.resolver import MODE_PROXY, MediaResolver
from .config import load_endpoints_config
from .connection_status import ConnectionStatusStore
from .credentials import CredentialResolver
from .endpoints import EndpointProber
from .observability import Observability
from .providers.evolution import EVOLUTION_V2
from .providers.registry import AdapterRegistry


@lru_cache(maxsize=1)
def get_gateway_container() -> "GatewayContainer":
    return GatewayContainer.build()


class GatewayContainer:
    def __init__(
        self,
        *,
        registry: AdapterRegistry,
        obs: Observability,
        prober: EndpointProber,
        credentials: CredentialResolver,
        cache: MediaUrlCache,
        pipeline: CloudinaryMediaPipeline,
        resolver: MediaResolver,
        statuses: ConnectionStatusStore,
    ):
        self.registry = registry
        self.obs = obs
        self.prober = prober
        self.credentials = credentials
        self.cache = cache
        self.pipeline = pipeline
        self.resolver = resolver
        self.statuses = statuses

    @staticmethod
    def build(credentials: Optional[CredentialResolver] = None) -> "GatewayContainer":
        obs = Observability(logging.getLogger("liguia.gateway"))
        registry = AdapterRegistry()
        registry.register(EVOLUTION_V2)

        cfg = load_endpoints_config()
        cfg.apply_to(registry)

        evolution_base_url = (
            (os.getenv("EVOLUTION_API_BASE_URL") or "").strip()
            or (os.getenv("EVOLUTION_BASE_URL") or "").strip()
        )
        evolution_api_key = (
            (os.getenv("EVOLUTION_API_KEY") or "").strip()
            or (os.getenv("EVOLUTION_API_TOKEN") or "").strip()
        )
        evolution = EvolutionAccess(evolution_base_url, evolution_api_key) if evolution_base_url else None

        cache = MediaUrlCache.from_env()
        # O pipeline só memoiza URLs do Cloudinary; o cache do resolver também guarda URLs de proxy.
        pipeline = CloudinaryMediaPipeline(cache=MediaUrlCache.from_env(), obs=obs, evolution=evolution)
        mode = (os.getenv("MEDIA_RESOLVER_MODE") or MODE_PROXY).strip().lower()

        return GatewayContainer(
            registry=registry,
            obs=obs,
            prober=EndpointProber(registry=registry, obs=obs, adapter_id=cfg.default_adapter),
            credentials=credentials or CredentialResolver(),
            cache=cache,
            pipeline=pipeline,
            resolver=MediaResolver(cache=cache, obs=obs, pipeline=pipeline, mode=mode),
            statuses=ConnectionStatusStore(obs),
        )
