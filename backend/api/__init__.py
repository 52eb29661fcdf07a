"""
FastAPI backend for the ASICS inventory scraper.

Provides REST API endpoints for:
- Managing monitored product URLs
- Starting, stopping and monitoring scrape batches
- Viewing stored inventory and scrape logs
"""
