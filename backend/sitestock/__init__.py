"""SiteStock — centralized inventory ledger and fulfilment workflows for construction projects."""

__version__ = "0.1.0"
