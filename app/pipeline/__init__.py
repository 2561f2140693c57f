from app.pipeline.parse_pipeline import ParsePipeline

__all__ = ["ParsePipeline"]
