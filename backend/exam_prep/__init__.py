"""Application package for the exam-prep weekly questions backend.

This package exposes the progression services, repositories and models
used by the FastAPI application and the catch-up job. Individual modules
contain the concrete implementations and documentation.
"""
