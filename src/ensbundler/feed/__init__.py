"""Block feed — new-block notifications as an ordered stream."""

from ensbundler.feed.block_feed import BlockFeed, BlockSource, FeedClosed, Web3BlockSource

__all__ = ["BlockFeed", "BlockSource", "FeedClosed", "Web3BlockSource"]
