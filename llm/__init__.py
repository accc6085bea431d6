from .summarizer import SummaryResult, summarize, summarize_and_update_item

__all__ = ["SummaryResult", "summarize", "summarize_and_update_item"]
