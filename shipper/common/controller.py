import logging

from .config_init import ShipperConfig
from .coordinator import CheckpointTicker, ShutdownCoordinator, TerminationChannel
from .dispatch_queue import DispatchQueue
from .follower import Follower
from .publisher import Publisher


class Controller:
    """Wires follower, dispatch queue, publisher and coordinator together."""

    def __init__(self, config: ShipperConfig, producer_factory=None):
        self.config = config
        self.terminations = TerminationChannel()
        self.dispatch_queue = DispatchQueue()
        self.follower = Follower(
            config.file,
            self.dispatch_queue,
            self.terminations,
            follow=config.follow,
            poll_interval=config.poll_interval,
        )
        publisher_kwargs = {"poll_interval": config.poll_interval}
        if producer_factory is not None:
            publisher_kwargs["producer_factory"] = producer_factory
        self.publisher = Publisher(config, self.dispatch_queue, self.terminations, **publisher_kwargs)
        self.ticker = CheckpointTicker(self.follower, config.checkpoint_interval) if config.follow else None
        self.coordinator = ShutdownCoordinator(
            self.terminations,
            self.follower,
            self.dispatch_queue,
            self.publisher,
            ticker=self.ticker,
            grace_period=config.grace_period,
        )

    def start(self, install_signal_handlers=True) -> int:
        logging.info(f"Starting shipper for {self.config.file} with config {self.config}")
        if install_signal_handlers:
            self.terminations.install_signal_handlers()

        self.publisher.start()
        self.follower.start()
        if self.ticker:
            self.ticker.start()

        return self.coordinator.run()
