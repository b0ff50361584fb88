from .metric_delta import histogram_observes, metric_delta, metric_increases

__all__ = ["histogram_observes", "metric_delta", "metric_increases"]
