"""
Wire protocols: SSDP search, UPnP device descriptions and AVTransport SOAP.
"""
