"""Job enrichment worker: scrape collected job postings and refine them with an LLM."""

__version__ = "0.1.0"
