"""wrserver — a local Web Risk lookup proxy.

Re-serves a small subset of the Web Risk API over plain HTTP so clients on
the same machine or network can check URLs without holding an API key:

  /status          — engine statistics
  /v1/uris:search  — threat lookup for one URI (JSON or protobuf)
  /r               — redirector with warning interstitials
  /public/*        — static assets used by the interstitial pages
"""

__version__ = "1.0.0"
