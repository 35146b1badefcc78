"""Application package for the study-abroad consultancy backend.

Models, repositories, services and routers for courses, test prep,
consultations, payments, CMS content and notifications. Individual
modules contain the concrete implementations and documentation.
"""
