"""Raw backing files and the zarr volume container."""
