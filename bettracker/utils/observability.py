# bettracker/utils/observability.py
import logging
from typing import Optional
import structlog
import contextvars
from prometheus_client import Counter, Histogram, CollectorRegistry

from bettracker.config import ObservabilitySettings

# Correlation ID for request tracing
CORRELATION_ID = contextvars.ContextVar('correlation_id', default=None)


class MetricsRegistry:
    """Centralized metrics management."""
    
    def __init__(self):
        self.registry = CollectorRegistry()
        self._init_metrics()
    
    def _init_metrics(self):
        """Initialize all metrics with proper naming conventions."""
        
        # HISTOGRAMS (timing data)
        self.leaderboard_compute_latency = Histogram(
            'leaderboard_compute_seconds',
            'Leaderboard ranking computation latency on cache miss',
            buckets=(0.001, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
            registry=self.registry
        )
        
        self.stats_recompute_latency = Histogram(
            'stats_recompute_seconds',
            'User statistics recompute latency',
            buckets=(0.001, 0.01, 0.05, 0.1, 0.5, 1.0),
            registry=self.registry
        )
        
        # COUNTERS (monotonic increases)
        self.settlements = Counter(
            'settlements_total',
            'Settled bets and picks',
            labelnames=['kind', 'result'],  # kind: 'bet' or 'pick'
            registry=self.registry
        )
        
        self.settlement_side_effect_failures = Counter(
            'settlement_side_effect_failures_total',
            'Best-effort settlement effects that failed',
            labelnames=['effect'],  # 'stats', 'ledger', 'follows'
            registry=self.registry
        )
        
        self.ledger_transactions = Counter(
            'ledger_transactions_total',
            'Ledger transactions appended',
            labelnames=['type'],
            registry=self.registry
        )
        
        self.leaderboard_requests = Counter(
            'leaderboard_requests_total',
            'Leaderboard reads by cache outcome',
            labelnames=['cache'],  # 'hit' or 'miss'
            registry=self.registry
        )


class StructlogConfig:
    """Structured logging configuration."""
    
    @staticmethod
    def configure(env: str = 'development', log_level: str = 'INFO'):
        """
        Configure structlog with environment-appropriate settings.
        
        Production: JSON output (machine-readable)
        Development: Console output (human-readable)
        """
        
        shared_processors = [
            # Add correlation ID to all logs
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt='iso'),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
        ]
        
        if env == 'production':
            processors = shared_processors + [
                structlog.processors.dict_tracebacks,
                structlog.processors.JSONRenderer(),
            ]
        else:
            processors = shared_processors + [
                structlog.dev.ConsoleRenderer(),
            ]
        
        structlog.configure(
            processors=processors,
            wrapper_class=structlog.make_filtering_bound_logger(
                logging.getLevelName(log_level)
            ),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )


class Logger:
    """Wrapper for structured logging with context awareness."""
    
    def __init__(self, module_name: str):
        self.logger = structlog.get_logger(module_name)
        self.module_name = module_name
    
    def with_correlation_id(self, correlation_id: str):
        """Bind correlation ID to all subsequent logs."""
        CORRELATION_ID.set(correlation_id)
        return self.logger.bind(correlation_id=correlation_id)
    
    def log_event(self, event: str, **kwargs):
        """Log structured event with automatic context."""
        corr_id = CORRELATION_ID.get()
        ctx = {'correlation_id': corr_id, 'module': self.module_name}
        ctx.update(kwargs)
        return self.logger.info(event, **ctx)
    
    def log_warning(self, event: str, **kwargs):
        """Log a non-fatal condition worth attention."""
        corr_id = CORRELATION_ID.get()
        ctx = {'correlation_id': corr_id, 'module': self.module_name}
        ctx.update(kwargs)
        return self.logger.warning(event, **ctx)
    
    def log_error(self, event: str, exc_info=None, **kwargs):
        """Log error with exception details."""
        corr_id = CORRELATION_ID.get()
        ctx = {'correlation_id': corr_id, 'module': self.module_name}
        ctx.update(kwargs)
        return self.logger.error(event, exc_info=exc_info, **ctx)


def initialize_observability(config: Optional[ObservabilitySettings] = None):
    """One-stop initialization for logging and metrics."""
    config = config or ObservabilitySettings()
    StructlogConfig.configure(env=config.environment, log_level=config.log_level)
    metrics = MetricsRegistry()
    
    logger = structlog.get_logger(__name__)
    logger.info(
        'observability_initialized',
        environment=config.environment,
        log_format=config.log_format,
        metrics_enabled=config.enable_metrics,
    )
    
    return metrics, config


# Global metrics instance
METRICS = None


def get_metrics() -> MetricsRegistry:
    """Lazy-load metrics singleton."""
    global METRICS
    if METRICS is None:
        METRICS = MetricsRegistry()
    return METRICS
