"""auth/ -- Authentication and authorization core for Nano Admin.

Layer rule: auth/ imports only core/, stdlib and third-party libraries, with
one exception: auth/service.py talks to the mail/ notification sink.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
