# Utility module (logging)
