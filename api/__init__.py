"""
FastAPI application for the helpdesk backend.

This package provides REST API endpoints for:
- Knowledge base articles, categories and search (full-text and semantic)
- Tickets, status workflow, comments and SLA status
- AI support chat
- Users, roles, teams, notifications and admin analytics
- Health checks
"""
