"""Telephony audio primitives: G.711 mu-law codec, 8/16 kHz rate conversion and framing.

Everything here is pure and stateless apart from ``FrameSplitter``'s carried
remainder, so the relay session can call it inline on the event loop.
"""
