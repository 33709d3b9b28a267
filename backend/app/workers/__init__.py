"""
Workers Package
Background workers for campaign execution
"""
from app.workers.campaign_worker import CampaignWorker

__all__ = [
    "CampaignWorker",
]
