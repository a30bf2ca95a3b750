"""
Unit tests for Discogs payload transformation.
"""

import pytest

from discogs_transform import (
    UNKNOWN_ARTIST,
    UNKNOWN_ALBUM,
    Track,
    clean_artist_name,
    get_primary_format,
    extract_genres,
    transform_tracklist,
    transform_release_to_vinyl_form,
    get_primary_cover_image_url,
    transform_search_result,
    transform_search_response
)


@pytest.mark.unit
class TestArtistNames:
    """Test Discogs disambiguation suffix handling."""

    def test_numeric_suffix_removed(self):
        """Test "(2)" style suffixes are stripped."""
        assert clean_artist_name('Nirvana (2)') == 'Nirvana'
        assert clean_artist_name('Prince (12)') == 'Prince'

    def test_other_parentheses_kept(self):
        """Test only trailing numeric suffixes are touched."""
        assert clean_artist_name('The Band (UK)') == 'The Band (UK)'
        assert clean_artist_name('(2) Many DJs') == '(2) Many DJs'

    def test_plain_name_unchanged(self):
        """Test names without a suffix pass through."""
        assert clean_artist_name('Miles Davis') == 'Miles Davis'


@pytest.mark.unit
class TestFormatMapping:
    """Test primary format selection."""

    def test_no_formats(self):
        """Test missing format lists map to None."""
        assert get_primary_format([]) is None
        assert get_primary_format(None) is None

    def test_multi_disc_vinyl(self):
        """Test vinyl quantity wins over descriptions."""
        formats = [{'name': 'Vinyl', 'qty': '2', 'descriptions': ['LP', 'Album']}]
        assert get_primary_format(formats) == '2xLP'

    def test_description_match(self):
        """Test the first known description is used."""
        formats = [{'name': 'Vinyl', 'qty': '1', 'descriptions': ['7"', '45 RPM', 'Single']}]
        assert get_primary_format(formats) == '7"'

    def test_album_description_maps_to_lp(self):
        """Test "Album" maps to LP."""
        formats = [{'name': 'Vinyl', 'qty': '1', 'descriptions': ['Reissue', 'Album']}]
        assert get_primary_format(formats) == 'LP'

    def test_name_fallback(self):
        """Test an unmapped format keeps its Discogs name."""
        formats = [{'name': 'Cassette', 'qty': '1', 'descriptions': ['Stereo']}]
        assert get_primary_format(formats) == 'Cassette'

    def test_box_set_name(self):
        """Test a mapped format name is translated."""
        assert get_primary_format([{'name': 'Box Set', 'qty': '1'}]) == 'Box Set'

    def test_only_first_entry_considered(self):
        """Test later format entries are ignored."""
        formats = [
            {'name': 'CD', 'qty': '1'},
            {'name': 'Vinyl', 'qty': '3', 'descriptions': ['LP']},
        ]
        assert get_primary_format(formats) == 'CD'


@pytest.mark.unit
class TestGenresAndTracks:
    """Test genre merging and tracklist filtering."""

    def test_genres_then_styles_deduplicated(self):
        """Test genres come first and duplicates are dropped."""
        release = {'genres': ['Jazz', 'Funk / Soul'], 'styles': ['Jazz', 'Modal']}
        assert extract_genres(release) == ['Jazz', 'Funk / Soul', 'Modal']

    def test_genres_capped_at_five(self):
        """Test no more than five genres are kept."""
        release = {'genres': ['Rock', 'Pop'], 'styles': ['A', 'B', 'C', 'D', 'E']}
        assert extract_genres(release) == ['Rock', 'Pop', 'A', 'B', 'C']

    def test_missing_genres(self):
        """Test releases without genres produce an empty list."""
        assert extract_genres({}) == []

    def test_only_tracks_kept(self, release_payload):
        """Test headings are dropped and order is preserved."""
        tracks = transform_tracklist(release_payload['tracklist'])

        assert [t.position for t in tracks] == ['A1', 'A2', 'B1']
        assert tracks[0] == Track(position='A1', title='So What', duration='9:22')
        assert tracks[2].duration == ''

    def test_empty_tracklist(self):
        """Test missing tracklists produce an empty list."""
        assert transform_tracklist(None) == []


@pytest.mark.unit
class TestReleaseTransform:
    """Test release to form data mapping."""

    def test_full_release(self, release_payload):
        """Test every mapped field of a complete release."""
        form = transform_release_to_vinyl_form(release_payload)

        assert form.artist == 'Miles Davis'
        assert form.album == 'Kind of Blue'
        assert form.year == 1959
        assert form.label == 'Columbia'
        assert form.catalog_number == 'CL 1355'
        assert form.country == 'US'
        assert form.format == 'LP'
        assert form.genre == ['Jazz', 'Modal', 'Cool Jazz']
        assert form.discogs_id == '1001'
        assert len(form.tracklist) == 3

    def test_cover_never_copied_from_discogs(self, release_payload):
        """Test the cover URL is left for the proxy step."""
        form = transform_release_to_vinyl_form(release_payload)
        assert form.cover_art_url is None

    def test_user_fields_left_empty(self, release_payload):
        """Test condition and personal fields are not guessed."""
        form = transform_release_to_vinyl_form(release_payload)

        assert form.sleeve_condition is None
        assert form.media_condition is None
        assert form.notes is None
        assert form.purchase_info is None
        assert form.rpm is None
        assert form.pressing_info is None

    def test_year_zero_becomes_none(self, release_payload):
        """Test Discogs' unknown year (0) is not stored."""
        release_payload['year'] = 0
        assert transform_release_to_vinyl_form(release_payload).year is None

    def test_artist_falls_back_to_sort_name(self):
        """Test artists_sort is used when no artists are listed."""
        form = transform_release_to_vinyl_form({'id': 5, 'title': 'X', 'artists_sort': 'Various'})
        assert form.artist == 'Various'

    def test_minimal_release_never_empty(self):
        """Test artist and album fall back to placeholders."""
        form = transform_release_to_vinyl_form({'id': 7})

        assert form.artist == UNKNOWN_ARTIST
        assert form.album == UNKNOWN_ALBUM
        assert form.label is None
        assert form.genre == []
        assert form.tracklist == []

    def test_to_dict(self, release_payload):
        """Test the form serializes tracks as plain dicts."""
        data = transform_release_to_vinyl_form(release_payload).to_dict()

        assert data['tracklist'][0] == {'position': 'A1', 'title': 'So What', 'duration': '9:22'}
        assert data['discogs_id'] == '1001'


@pytest.mark.unit
class TestCoverImage:
    """Test primary cover selection."""

    def test_primary_image_preferred(self, release_payload):
        """Test the primary image wins over earlier secondaries."""
        assert get_primary_cover_image_url(release_payload) == 'https://i.discogs.com/front-1001.jpg'

    def test_first_image_fallback(self):
        """Test the first image is used when none is primary."""
        release = {'images': [{'type': 'secondary', 'uri': 'https://i.discogs.com/a.jpg'},
                              {'type': 'secondary', 'uri': 'https://i.discogs.com/b.jpg'}]}
        assert get_primary_cover_image_url(release) == 'https://i.discogs.com/a.jpg'

    def test_no_images(self):
        """Test releases without images have no cover."""
        assert get_primary_cover_image_url({}) is None
        assert get_primary_cover_image_url({'images': []}) is None


@pytest.mark.unit
class TestSearchTransform:
    """Test search hit mapping."""

    def test_title_split(self, search_payload):
        """Test "Artist - Album" titles are split."""
        result = transform_search_result(search_payload['results'][0])

        assert result.id == 1001
        assert result.artist == 'Miles Davis'
        assert result.album == 'Kind of Blue'
        assert result.year == '1959'
        assert result.label == 'Columbia'
        assert result.catno == 'CL 1355'
        assert result.format == 'Vinyl, LP, Album, Mono'
        assert result.country == 'US'
        assert result.coverImage == 'https://i.discogs.com/cover-1001.jpg'

    def test_title_without_separator(self, search_payload):
        """Test titles without " - " become the album of an unknown artist."""
        result = transform_search_result(search_payload['results'][1])

        assert result.artist == UNKNOWN_ARTIST
        assert result.album == 'Untitled'
        assert result.label is None
        assert result.format is None
        assert result.thumb == ''
        assert result.coverImage == ''

    def test_split_on_first_separator(self):
        """Test only the first " - " separates artist from album."""
        result = transform_search_result({'id': 1, 'title': 'A - B - C'})

        assert result.artist == 'A'
        assert result.album == 'B - C'

    def test_artist_suffix_cleaned(self):
        """Test disambiguation suffixes are stripped in search hits too."""
        result = transform_search_result({'id': 1, 'title': 'Nirvana (2) - Local Anaesthetic'})
        assert result.artist == 'Nirvana'

    def test_search_response(self, search_payload):
        """Test results and pagination are mapped together."""
        payload = transform_search_response(search_payload)

        assert len(payload['results']) == 2
        assert payload['pagination'] == {'page': 1, 'pages': 2, 'total': 3}

    def test_empty_search_response(self):
        """Test a response without results or pagination."""
        payload = transform_search_response({})

        assert payload['results'] == []
        assert payload['pagination'] == {'page': 1, 'pages': 1, 'total': 0}
