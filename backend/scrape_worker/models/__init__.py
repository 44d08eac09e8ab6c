from scrape_worker.models.job import Job, JobStatus, PIPELINE_STATUSES, BOARD_STATUSES, utcnow

__all__ = ["Job", "JobStatus", "PIPELINE_STATUSES", "BOARD_STATUSES", "utcnow"]
