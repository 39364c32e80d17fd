"""mailer/ -- Transactional email for MonoAuth.

Layer rule: mailer/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or auth/. auth/ hands it addresses, links and
codes; mailer/ renders and delivers them.
"""
