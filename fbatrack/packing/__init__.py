"""Shipment packing: pack group import, box allocation and Seller Central export."""
