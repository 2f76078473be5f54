"""Application package for the QuizForce practice-exam backend.

This package exposes the scoring engine together with the service,
repository and model modules used by the FastAPI application. The
scoring engine (`quizforce.scoring`) is pure and has no database or
HTTP dependencies; everything else wraps it.
"""
