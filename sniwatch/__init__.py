"""
sniwatch

Live SNI event stream pipeline for the DPI-bypass appliance console.

Packages:
- base: configuration, logging setup and the error taxonomy
- data: snapshot storage (window buffers, ASN table)
- stream: line source, batcher, parser, filter engine, domain variants
- enrich: ASN classification of connection endpoints
- clients: HTTP clients for the appliance API
"""

__version__ = "0.3.0"
