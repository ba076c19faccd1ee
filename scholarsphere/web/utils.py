"""
helpers for reading HTTP request headers
"""
import re

__all__ = [ 'order_accepts', 'prefers' ]

_QVALUE = re.compile(r';\s*q=(\d+(\.\d+)?)')

def order_accepts(accepts):
    """
    return the media types named in one or more Accept header values, most preferred first.
    Types with a q-value of 0 are dropped; types of equal q-value keep their given order.

    :param accepts:  an Accept header value or a list of them
                     :type accepts: str or list of str
    :rtype: list of str
    """
    if isinstance(accepts, str):
        accepts = [accepts]

    ranked = []
    for hdr in accepts:
        for item in hdr.split(','):
            item = item.strip()
            if not item:
                continue
            m = _QVALUE.search(item)
            q = float(m.group(1)) if m else 1.0
            if q > 0:
                ranked.append((item.split(';', 1)[0].strip(), q))

    ranked.sort(key=lambda t: t[1], reverse=True)
    return [t[0] for t in ranked]

def prefers(accepts, ctype, over):
    """
    return True if ``ctype`` comes before ``over`` in an ordered list of accepted types (as
    returned by :py:func:`order_accepts`).  Wildcards count for neither.
    """
    for ct in accepts:
        if ct in (ctype, over):
            return ct == ctype
    return False
