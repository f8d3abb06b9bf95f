from collections import namedtuple

# A theme is a marketing-message category detected from creative copy.
ThemeDefinition = namedtuple('ThemeDefinition', ['name', 'patterns', 'color'])

OTHER_THEME = 'Other'
DEFAULT_THEME_COLOR = '#64748b'

# Ordered: classification results follow this order. Patterns are lowercase.
THEME_DEFINITIONS = [
    ThemeDefinition('Testimonials',
                    ('testimonial', 'customer story', 'review', 'success story', 'what people say'),
                    '#9b87f5'),
    ThemeDefinition('Limited Time Offers',
                    ('limited time', 'offer ends', 'sale ends', 'last chance', 'only today', 'hurry', 'flash sale'),
                    '#f59e0b'),
    ThemeDefinition('Product Features',
                    ('features', 'introducing', 'how it works', 'benefits', 'discover', 'meet the', 'presenting'),
                    '#4ade80'),
    ThemeDefinition('Social Proof',
                    ('trusted by', 'used by', '5-star', 'top rated', 'best selling', 'as seen in', 'verified'),
                    '#3b82f6'),
    ThemeDefinition('Before & After',
                    ('before and after', 'transformation', 'results', 'see the difference', 'compare'),
                    '#ec4899'),
    ThemeDefinition('Special Promotion',
                    ('special promotion', 'discount', 'sale', '% off', 'deal', 'savings', 'free shipping'),
                    '#f43f5e'),
    ThemeDefinition('How-To',
                    ('how to', 'step by step', 'guide', 'tutorial', 'learn how', 'tips for'),
                    '#6366f1'),
    ThemeDefinition('Influencer',
                    ('influencer', 'celebrity', 'ambassador', 'endorsed by', 'partner with'),
                    '#8b5cf6'),
]

_COLORS_BY_NAME = {theme.name: theme.color for theme in THEME_DEFINITIONS}


def classify(text):
    """
    Returns the names of every theme whose patterns occur in `text`.

    Matching is a case-insensitive substring test; a text can match several
    themes. The result keeps the order of THEME_DEFINITIONS and is empty when
    nothing matches. Substituting the "Other" sentinel is left to the caller.
    """
    if not text:
        return []
    lowered = text.lower()
    return [theme.name for theme in THEME_DEFINITIONS
            if any(pattern in lowered for pattern in theme.patterns)]


def theme_color(name):
    """Display color for a theme name, or the neutral default for unknown names."""
    return _COLORS_BY_NAME.get(name, DEFAULT_THEME_COLOR)
