"""Request-facing side of frontdev.

    - proxy: Forwards asset requests to the bundler
    - livereload: Reload notifications for browsers
    - http: Front HTTP server tying it together
"""
