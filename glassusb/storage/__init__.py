"""Host-side building blocks of the flash pipeline."""
