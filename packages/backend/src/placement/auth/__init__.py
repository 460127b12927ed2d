"""Authentication — who is on the other end of a request.

Learn: accounts live in the platform's account service, which issues a
JWT at login and sets it as the `accessToken` cookie. This service only
verifies that token and reads two claims from it:
- sub: the user id (the registry key)
- user_type: student, company or admin (the role tag)
"""
