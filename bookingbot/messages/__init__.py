"""User-facing copy and menu builders."""
