"""Business logic services used by HTTP controllers.

Each module holds small service classes that coordinate repositories,
utilities and side-effects (e-mail, notifications). Services perform
validation, execute domain logic and raise `errors.ServiceError`
subclasses that the app maps to HTTP responses.
"""
