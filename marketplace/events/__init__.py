from .producer import event_producer, MarketplaceEventProducer

__all__ = [
    "event_producer",
    "MarketplaceEventProducer",
]
