"""
mailer/templates.py -- Jinja2 templates for the three auth emails.

Templates live in a DictLoader rather than on disk so the package installs
without package-data configuration. Each message template extends "base.html",
which supplies the outer layout. autoescape is on: links and codes are
interpolated as data, never as markup.
"""

from __future__ import annotations

from jinja2 import DictLoader, Environment, StrictUndefined, select_autoescape

_BASE = """\
<!DOCTYPE html>
<html>
  <body style="font-family:Arial,sans-serif;background:#f6f6f6;padding:24px">
    <div style="max-width:600px;margin:auto;background:#fff;padding:24px">
      {% block content %}{% endblock %}
    </div>
  </body>
</html>
"""

_OTP = """\
{% extends "base.html" %}
{% block content %}
<h2>Your OTP Code</h2>
<p>Use the code below:</p>
<h1 style="letter-spacing:4px">{{ otp }}</h1>
<p>This code expires in {{ expire_minutes }} minutes.</p>
{% endblock %}
"""

_VERIFY_EMAIL = """\
{% extends "base.html" %}
{% block content %}
<h2>Verify Your Email</h2>
<p>Please click the button below to verify your email address.</p>
<a href="{{ url }}"
   style="display:inline-block;padding:12px 20px;background:#4f46e5;color:#fff;text-decoration:none;border-radius:6px;margin-top:16px">
  Verify Email
</a>
<p style="margin-top:24px;font-size:12px;color:#666">
  If you didn't create an account, ignore this email.
</p>
{% endblock %}
"""

_FORGOT_PASSWORD = """\
{% extends "base.html" %}
{% block content %}
<h2>Reset Your Password</h2>
<p>You requested a password reset.</p>
<a href="{{ url }}"
   style="display:inline-block;padding:12px 20px;background:#dc2626;color:#fff;text-decoration:none;border-radius:6px;margin-top:16px">
  Reset Password
</a>
<p style="margin-top:24px;font-size:12px;color:#666">
  This link expires in {{ expire_minutes }} minutes.
</p>
{% endblock %}
"""

_env = Environment(
    loader=DictLoader(
        {
            "base.html": _BASE,
            "otp.html": _OTP,
            "verify_email.html": _VERIFY_EMAIL,
            "forgot_password.html": _FORGOT_PASSWORD,
        }
    ),
    autoescape=select_autoescape(["html"]),
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
)


def render(template_name: str, **variables) -> str:
    """Render one of the registered templates.

    StrictUndefined makes a missing variable raise UndefinedError instead of
    silently rendering an empty link into a sent email.
    """
    return _env.get_template(template_name).render(**variables)
