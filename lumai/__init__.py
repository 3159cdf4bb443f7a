"""lumai: tool-calling conversation engine for the Lumai wellness assistant."""

__version__ = "0.4.0"
