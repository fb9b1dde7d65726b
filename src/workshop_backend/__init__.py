"""
Workshop Backend - REST API for workshops and their step-by-step slides

This package provides a FastAPI-based web service that manages workshop
records (metadata plus an ordered list of slides). Metadata lives in a
document store; cover and slide images live in an object store. It enables:

- Workshop creation with a required cover image
- Listing workshops (lightweight projection) and fetching one with its slides
- Appending slides, numbered "Step N" in insertion order
- Deleting a workshop together with every image under its storage folder

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - workshop_service: create / fetch / list / add-slide / delete workflows
    - database: record stores (DynamoDB, SQLite) with atomic list append
    - s3_service: object stores (S3, local filesystem)
    - compensation: cleanup steps run when a cross-store workflow fails
    - models: Pydantic models for records and responses
    - configuration: settings defaults and environment overrides
    - utils: filename and directory helpers

Usage:
    Run the API server with:
        uvicorn workshop_backend.main:app --reload --host 0.0.0.0 --port 8000

    Local backends (no AWS account needed):
        WORKSHOP_OBJECT_BACKEND=local WORKSHOP_RECORD_BACKEND=sqlite \\
            uv run uvicorn workshop_backend.main:app --reload

Architecture Principles:
    - No transactions across the two stores; side effects are ordered so a
      record never points at a missing cover image
    - Slide append is a single atomic storage operation, never read-modify-write
    - Storage clients are created once and shared by all requests
"""
