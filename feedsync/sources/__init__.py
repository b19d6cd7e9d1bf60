from ..registry import registry
from .base import FeedSource
from .miniflux import MinifluxFeedSource
from .standalone import StandaloneFeedSource

registry.register(
    "standalone",
    lambda config, client, store: StandaloneFeedSource(
        config.source,
        client,
        store,
        max_parallel=config.sync.max_parallel_fetches,
    ),
)
registry.register(
    "miniflux",
    lambda config, client, store: MinifluxFeedSource(
        config.source,
        client,
        page_size=config.sync.page_size,
    ),
)

__all__ = ["FeedSource", "MinifluxFeedSource", "StandaloneFeedSource"]
