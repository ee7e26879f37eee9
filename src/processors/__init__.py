"""Classification stages and provider clients

Import the pipeline stages from here:
    classify -> apply_dust_policy -> consolidate_by_signature
"""

from src.processors.classifier import TransactionClassifier, classify
from src.processors.consolidator import consolidate_by_signature
from src.processors.dust import apply_dust_policy
from src.processors.enrichment import Enricher
from src.processors.helius_client import HeliusClient
from src.processors.ingestor import ScanOrchestrator
from src.processors.network_retry import NetworkRetry
from src.processors.price_fetcher import RateFetcher
from src.processors.signatures import TransactionIndex
from src.processors.symbols import SymbolResolver

__all__ = [
    "TransactionClassifier",
    "classify",
    "consolidate_by_signature",
    "apply_dust_policy",
    "Enricher",
    "HeliusClient",
    "ScanOrchestrator",
    "NetworkRetry",
    "RateFetcher",
    "TransactionIndex",
    "SymbolResolver",
]
