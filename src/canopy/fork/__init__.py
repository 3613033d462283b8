"""Fork synthesis pipeline."""

from canopy.fork.pipeline import CANCELLABLE_STATES, ForkPipeline, ForkState
from canopy.fork.prompts import seed_prompt, summary_chatlog, summary_request
from canopy.fork.rehost import RehostResult, rehost_assets
from canopy.fork.summary import Summarizer, split_for_summary

__all__ = [
    "CANCELLABLE_STATES",
    "ForkPipeline",
    "ForkState",
    "RehostResult",
    "Summarizer",
    "rehost_assets",
    "seed_prompt",
    "split_for_summary",
    "summary_chatlog",
    "summary_request",
]
