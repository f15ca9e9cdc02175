from .ebay import EbayAdapter
from .facebook import FacebookAdapter
from .depop import DepopAdapter
from .craigslist import CraigslistAdapter

__all__ = ["EbayAdapter", "FacebookAdapter", "DepopAdapter", "CraigslistAdapter"]
