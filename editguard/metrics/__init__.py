from editguard.metrics.sli import PipelineSLI

__all__ = ["PipelineSLI"]
