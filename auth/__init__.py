"""auth/ -- Authentication and authorization package for MonoAuth.

Layer rule: auth/ imports only stdlib, third-party libraries, core/ and the
mailer interface. It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
