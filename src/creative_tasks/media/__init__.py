"""Media storage tiering, signed URL refresh and engine output normalization."""
